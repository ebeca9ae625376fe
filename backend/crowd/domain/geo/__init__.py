"""Geospatial helpers: geohash cells and great-circle distance."""
