"""
IntakeFlow: universal intake and routing pipeline.
"""

__version__ = "0.1.0"
