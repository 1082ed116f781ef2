"""
stfusion command line interface.
"""
