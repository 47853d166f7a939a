"""Backend for the tarshare directory server.

Route handlers in server.py stay thin; this package holds:
- selection validation and root containment (security)
- the lazy directory walker and the streaming tar writer
- the bounded byte bridge between archive worker threads and the event loop
- the pipeline tying them together, plus the HTML listing

Hidden entries (names starting with ".") are never listed or archived.
"""
