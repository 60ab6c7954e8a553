"""
TunerBridge Test Suite
"""
