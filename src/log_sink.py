"""Loguru sink для записи WARNING+ логов в таблицу app_logs."""

from supabase import Client

from src.database import sanitize_error

LOGS_TABLE = "app_logs"


def create_supabase_sink(db: Client):
    """Фабрика: вернуть sink-функцию, привязанную к db-клиенту."""

    def sink(message) -> None:
        record = message.record
        try:
            db.table(LOGS_TABLE).insert({
                "level": record["level"].name,
                "module": record["name"],
                "function": record["function"],
                "line": record["line"],
                # Креды из URL не должны попасть в общую таблицу
                "message": sanitize_error(str(record["message"])),
            }).execute()
        except Exception:
            pass  # Сбой записи лога не должен ронять приложение

    return sink
