"""
Lipid Class Configuration
=========================

Lipid classes reported by the shotgun lipidomics panel. Single-species columns
are named '<class> <chain composition>' (e.g. 'PC 34:1', 'TAG 52:2'); columns
holding only the class abbreviation are class sums.

Update LIPID_CLASSES when new classes are added to the panel.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class LipidCategory(Enum):
    """LIPID MAPS top-level category."""
    GLYCEROPHOSPHOLIPID = "glycerophospholipid"
    GLYCEROLIPID = "glycerolipid"
    SPHINGOLIPID = "sphingolipid"
    STEROL = "sterol"
    FATTY_ACYL = "fatty_acyl"


@dataclass
class LipidClass:
    """Definition of a single lipid class."""
    abbreviation: str
    full_name: str
    category: LipidCategory
    is_lyso: bool = False


LIPID_CLASSES: Dict[str, LipidClass] = {
    # Glycerophospholipids
    "PC": LipidClass("PC", "Phosphatidylcholine", LipidCategory.GLYCEROPHOSPHOLIPID),
    "PE": LipidClass("PE", "Phosphatidylethanolamine", LipidCategory.GLYCEROPHOSPHOLIPID),
    "PI": LipidClass("PI", "Phosphatidylinositol", LipidCategory.GLYCEROPHOSPHOLIPID),
    "PS": LipidClass("PS", "Phosphatidylserine", LipidCategory.GLYCEROPHOSPHOLIPID),
    "PG": LipidClass("PG", "Phosphatidylglycerol", LipidCategory.GLYCEROPHOSPHOLIPID),
    "PA": LipidClass("PA", "Phosphatidic acid", LipidCategory.GLYCEROPHOSPHOLIPID),
    "LPC": LipidClass("LPC", "Lysophosphatidylcholine",
                      LipidCategory.GLYCEROPHOSPHOLIPID, is_lyso=True),
    "LPE": LipidClass("LPE", "Lysophosphatidylethanolamine",
                      LipidCategory.GLYCEROPHOSPHOLIPID, is_lyso=True),
    "PC O": LipidClass("PC O", "Ether-linked phosphatidylcholine",
                       LipidCategory.GLYCEROPHOSPHOLIPID),
    "PE O": LipidClass("PE O", "Ether-linked phosphatidylethanolamine",
                       LipidCategory.GLYCEROPHOSPHOLIPID),

    # Glycerolipids
    "TAG": LipidClass("TAG", "Triacylglycerol", LipidCategory.GLYCEROLIPID),
    "DAG": LipidClass("DAG", "Diacylglycerol", LipidCategory.GLYCEROLIPID),
    "MAG": LipidClass("MAG", "Monoacylglycerol", LipidCategory.GLYCEROLIPID),

    # Sphingolipids
    "SM": LipidClass("SM", "Sphingomyelin", LipidCategory.SPHINGOLIPID),
    "Cer": LipidClass("Cer", "Ceramide", LipidCategory.SPHINGOLIPID),
    "HexCer": LipidClass("HexCer", "Hexosylceramide", LipidCategory.SPHINGOLIPID),
    "LacCer": LipidClass("LacCer", "Lactosylceramide", LipidCategory.SPHINGOLIPID),
    "DCer": LipidClass("DCer", "Dihydroceramide", LipidCategory.SPHINGOLIPID),

    # Sterols and fatty acyls
    "CE": LipidClass("CE", "Cholesteryl ester", LipidCategory.STEROL),
    "FFA": LipidClass("FFA", "Free fatty acid", LipidCategory.FATTY_ACYL),
}


# Class prefix: everything before the chain composition ('PC O-34:1' -> 'PC O')
_CLASS_PATTERN = re.compile(r'^\s*([A-Za-z]+(?:\s+O)?)[\s\-(]')


def get_lipid_class(analyte: str) -> Optional[str]:
    """Return the class abbreviation of an analyte name, or None if unknown."""
    match = _CLASS_PATTERN.match(str(analyte))
    if not match:
        return None
    prefix = match.group(1)
    if prefix in LIPID_CLASSES:
        return prefix
    # 'PC O' style prefixes fall back to the base class
    base = prefix.split()[0]
    return base if base in LIPID_CLASSES else None


def get_class_info(abbreviation: str) -> Optional[LipidClass]:
    """Get the definition for a lipid class abbreviation."""
    return LIPID_CLASSES.get(abbreviation)


def get_classes_by_category(category: LipidCategory) -> List[str]:
    """Get class abbreviations belonging to a LIPID MAPS category."""
    return [abbr for abbr, cls in LIPID_CLASSES.items() if cls.category == category]
