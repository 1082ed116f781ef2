"""
Raster file input and output (requires rasterio).
"""
