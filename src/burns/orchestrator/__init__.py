"""Task queue, agent registry and cycle scheduler.

All coordination state lives in one JSON file per task and per agent. There is
no broker and no process holding a global lock: each record is guarded on its
own, and every write is a copy-modify-atomic-replace, so a crash at any point
leaves either the old or the new record on disk.
"""
