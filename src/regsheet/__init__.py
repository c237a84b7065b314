"""regsheet -- regression workbook store with reviewer edit overlays."""

__version__ = "0.1.0"
