"""
Ambient stack: configuration, logging, tracing, metrics, database, AI client
"""
