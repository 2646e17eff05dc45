"""
Layer operations: band stacking and pixel sampling.
"""
