"""Lipidomics workflow configuration module."""
from .lipid_classes import (
    LIPID_CLASSES, LipidClass, LipidCategory,
    get_lipid_class, get_class_info, get_classes_by_category,
)
from .workflow_settings import DEFAULT_SETTINGS, WorkflowSettings
from .logging_config import setup_logging
