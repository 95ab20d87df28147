class SimilarityError(RuntimeError):
    pass


class ItemNotFoundError(SimilarityError, LookupError):
    def __init__(self, item_id: str, content_type: str):
        super().__init__(f"{content_type.capitalize()} not found: {item_id}")
        self.item_id = item_id
        self.content_type = content_type


class CapabilityUnavailableError(SimilarityError):
    """No embedding or text-generation model is configured."""


class TextGenerationError(SimilarityError):
    pass
