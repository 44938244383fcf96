"""Example data source catalogs bundled with the bridge."""
