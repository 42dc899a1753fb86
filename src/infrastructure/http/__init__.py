"""
HTTP retrieval of stored documents by their public URL.
"""
