# anpr_stream - live number plate recognition with stabilization and enrichment
__version__ = "1.0.0"
