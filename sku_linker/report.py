"""
Scan report aggregation and export
"""
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class UnresolvedImage:
    filename: str
    extracted_codes: List[str]
    match_attempts: int
    reason: str = ''


@dataclass
class ScanReport:
    """Aggregate outcome of one reconciliation run"""
    session_id: str = ''
    status: str = 'initializing'
    total_images: int = 0
    total_products: int = 0
    linked_images: int = 0
    unlinked_images: int = 0
    direct_links_created: int = 0
    candidates_created: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    processing_time_ms: int = 0
    error_count: int = 0
    unresolved: List[UnresolvedImage] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    max_unresolved: int = 1000
    max_errors: int = 20

    def add_unresolved(self, filename: str, extracted_codes: List[str], match_attempts: int, reason: str = '') -> None:
        """Record an image with no usable match (counted even past the cap)."""
        self.unlinked_images += 1
        if len(self.unresolved) < self.max_unresolved:
            self.unresolved.append(UnresolvedImage(filename, list(extracted_codes), match_attempts, reason))

    def add_error(self, message: str) -> None:
        self.error_count += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(message)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.pop('max_unresolved')
        data.pop('max_errors')
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'ScanReport':
        data = dict(data)
        unresolved = [UnresolvedImage(**item) for item in data.pop('unresolved', [])]
        known = {name for name in cls.__dataclass_fields__}
        report = cls(**{k: v for k, v in data.items() if k in known})
        report.unresolved = unresolved
        return report

    def summary(self) -> str:
        return (f"{self.status}: {self.total_images} images, {self.linked_images} already linked, "
                f"{self.direct_links_created} direct links, {self.candidates_created} candidates, "
                f"{self.unlinked_images} unresolved, {self.failed} failed, {self.skipped} skipped "
                f"in {self.processing_time_ms} ms")

    def unresolved_frame(self) -> pd.DataFrame:
        rows = [{
            'filename': item.filename,
            'extracted_codes': ', '.join(item.extracted_codes),
            'match_attempts': item.match_attempts,
            'reason': item.reason,
        } for item in self.unresolved]
        return pd.DataFrame(rows, columns=['filename', 'extracted_codes', 'match_attempts', 'reason'])

    def export_unresolved(self, output_path: str) -> Path:
        """
        Write the unresolved images to CSV or Excel (by file extension).

        Args:
            output_path: Target .csv or .xlsx path

        Returns:
            Path of the written file
        """
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = self.unresolved_frame()
        if path.suffix.lower() in ('.xlsx', '.xls'):
            df.to_excel(path, index=False, engine='openpyxl')
        else:
            df.to_csv(path, index=False)
        logger.info(f"Exported {len(df)} unresolved images to {path}")
        return path
