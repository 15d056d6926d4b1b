"""Кастомные исключения сервиса проверки ссылок."""


class CheckerError(Exception):
    """Общая ошибка сервиса."""


class ValidationError(CheckerError):
    """Некорректный ввод — пустая отправка, значения вне диапазона и т.п."""


class StateTransitionError(CheckerError):
    """Недопустимый переход состояния задачи или выполнения."""


class NotFoundError(CheckerError):
    """Задача, отправка или выполнение не найдены."""

    def __init__(self, entity: str, entity_id: int | str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class UpstreamError(CheckerError):
    """Валидатор, источник ссылок или хранилище недоступны (или таймаут)."""


class UnauthenticatedError(UpstreamError):
    """Внешний сервис отверг креды — вызывающий должен их обновить."""

    def __init__(self, service: str) -> None:
        self.service = service
        super().__init__(f"{service} rejected credentials (HTTP 401)")
