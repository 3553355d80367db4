# Video Catalog Scanner

__version__ = "0.1.0"
