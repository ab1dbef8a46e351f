"""Enumerations shared by models, schemas and services."""
from enum import Enum


class DebriefTrigger(str, Enum):
    """What caused a debrief to be generated."""
    AUTO = "auto"
    MANUAL = "manual"
    REGENERATE = "regenerate"


class WeightUnit(str, Enum):
    KG = "kg"
    LBS = "lbs"
