from .playbook_store import PlaybookStore, PlaybookStoreError, project_id_for

__all__ = ["PlaybookStore", "PlaybookStoreError", "project_id_for"]
