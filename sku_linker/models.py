"""
Typed records shared by the extractor, scorer, orchestrator and review workflow
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Extraction provenance
PROVENANCE_EXACT = 'exact'
PROVENANCE_ZERO_PADDED = 'zero_padded'
PROVENANCE_MULTI = 'multi'
PROVENANCE_PATTERN = 'pattern'
PROVENANCE_PATH = 'path'
PROVENANCE_FUZZY = 'fuzzy'

# Match types
MATCH_EXACT = 'exact'
MATCH_VARIANT = 'variant'
MATCH_FUZZY = 'fuzzy'

# Candidate review states
CANDIDATE_PENDING = 'pending'
CANDIDATE_APPROVED = 'approved'
CANDIDATE_REJECTED = 'rejected'
CANDIDATE_STATUSES = (CANDIDATE_PENDING, CANDIDATE_APPROVED, CANDIDATE_REJECTED)

LINK_ACTIVE = 'active'


@dataclass
class Product:
    id: str
    code: Optional[str]
    name: str = ''
    active: bool = True


@dataclass(frozen=True)
class ExtractedCode:
    value: str
    confidence: int
    provenance: str


@dataclass
class ImageAsset:
    filename: str
    storage_path: str
    is_directory: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MatchResult:
    product_id: str
    product_code: str
    extracted_code: ExtractedCode
    score: int
    match_type: str


@dataclass
class ImageCandidate:
    id: int
    product_id: str
    image_url: str
    confidence: int
    extracted_code: Optional[str]
    source_filename: Optional[str]
    metadata: Dict[str, Any]
    status: str = CANDIDATE_PENDING
    rejection_reason: Optional[str] = None
    created_at: Optional[str] = None
    reviewed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != CANDIDATE_PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'image_url': self.image_url,
            'confidence': self.confidence,
            'extracted_code': self.extracted_code,
            'source_filename': self.source_filename,
            'metadata': self.metadata,
            'status': self.status,
            'rejection_reason': self.rejection_reason,
            'created_at': self.created_at,
            'reviewed_at': self.reviewed_at,
        }


@dataclass
class ImageLink:
    id: int
    product_id: str
    image_url: str
    confidence: Optional[int]
    auto_matched: bool
    is_primary: bool = True
    status: str = LINK_ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
