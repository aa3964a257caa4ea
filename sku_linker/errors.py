"""
Error taxonomy for the image reconciliation engine
"""


class LinkerError(Exception):
    """Base class for all reconciliation errors"""


class DuplicateLinkSkip(LinkerError):
    """Product already has an active primary image link"""

    def __init__(self, product_id: str, message: str = None):
        self.product_id = product_id
        super().__init__(message or f"Product {product_id} already has an active image link")


class PersistenceFailure(LinkerError):
    """A write to the link/candidate store failed"""


class StorageAccessFailure(LinkerError):
    """A paginated listing call against the image store failed"""


class CatalogAccessFailure(LinkerError):
    """The product catalog could not be read"""


class BatchTimeout(LinkerError):
    """A processing batch exceeded its time budget"""


class CandidateNotFound(LinkerError):
    """No image candidate exists with the given id"""

    def __init__(self, candidate_id: int):
        self.candidate_id = candidate_id
        super().__init__(f"Image candidate {candidate_id} not found")


class InvalidCandidateState(LinkerError):
    """Review action attempted on a candidate that is no longer pending"""

    def __init__(self, candidate_id: int, status: str):
        self.candidate_id = candidate_id
        self.status = status
        super().__init__(f"Image candidate {candidate_id} is already {status}")


# Unresolved reasons recorded in the scan report (not raised)
EXTRACTION_EMPTY = 'extraction_empty'
NO_CATALOG_MATCH = 'no_catalog_match'
