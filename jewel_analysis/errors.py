class JewelAnalysisError(Exception):
    """Base class for errors the pages turn into user-facing messages."""

    def to_dict(self) -> dict[str, str]:
        return {"error": type(self).__name__, "message": str(self)}


class RateUnavailableError(JewelAnalysisError):
    """No market-rate snapshot exists yet, so nothing can be priced."""


class NotFoundError(JewelAnalysisError):
    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} #{entity_id} was not found.")


class EmailDispatchError(JewelAnalysisError):
    pass
