"""
HTTP routes for MediaShift
"""
