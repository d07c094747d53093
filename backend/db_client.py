import logging
from typing import List, Dict, Any, Optional

from backend.dependencies import get_supabase

logger = logging.getLogger("fileportal.db_client")

FILES_TABLE = "files"


class DatabaseClient:
    def __init__(self, access_token: str):
        self.access_token = access_token
        logger.debug("Initializing Supabase client (token=%s...)", access_token[:20] if access_token else "Service")
        self.supabase = get_supabase(access_token)

    def close(self):
        # supabase-py holds no connection that needs closing; kept for the `with` protocol
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Files ---

    def list_files(self, student_id: str) -> List[Dict[str, Any]]:
        """Returns the student's file rows, newest upload first."""
        logger.debug("DatabaseClient.list_files for student_id=%s", student_id)
        res = (
            self.supabase.table(FILES_TABLE)
            .select("*")
            .eq("student_id", student_id)
            .order("uploaded_at", desc=True)
            .execute()
        )
        return res.data or []

    def get_file(self, file_id: str, student_id: str) -> Optional[Dict[str, Any]]:
        logger.debug("DatabaseClient.get_file id=%s for student_id=%s", file_id, student_id)
        res = (
            self.supabase.table(FILES_TABLE)
            .select("*")
            .eq("id", file_id)
            .eq("student_id", student_id)
            .execute()
        )
        return res.data[0] if res.data else None


def get_db_client(access_token: str) -> DatabaseClient:
    return DatabaseClient(access_token)
