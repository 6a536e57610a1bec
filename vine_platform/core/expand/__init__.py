"""Reference expansion.

A reference node stands in for a whole graph kept in another file. Expanding
it inlines that graph so the parent can be scheduled as one unit.
"""
