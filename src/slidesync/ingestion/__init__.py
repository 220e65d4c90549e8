"""Frame sampling and slide rendering."""
