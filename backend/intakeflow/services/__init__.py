"""
Pipeline entry point, collaborator clients and audit sinks
"""
