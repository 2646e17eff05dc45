"""
Layer catalog: attribute store, key indexes, codec and zoom resolution.
"""
