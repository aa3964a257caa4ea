"""
Database module for the product image linker
Catalog, image links, review candidates and scan reports in SQLite
"""

import sqlite3
import json
import os
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set
import pandas as pd

from sku_linker.errors import (
    CatalogAccessFailure,
    DuplicateLinkSkip,
    InvalidCandidateState,
    PersistenceFailure,
)
from sku_linker.models import (
    CANDIDATE_APPROVED,
    CANDIDATE_PENDING,
    CANDIDATE_STATUSES,
    ImageCandidate,
    ImageLink,
    LINK_ACTIVE,
    Product,
)
from sku_linker.report import ScanReport

# Initialize logger
logger = logging.getLogger(__name__)


class LinkDatabase:
    def __init__(self, db_path: str = "data/image_links.db"):
        """Open (and create if needed) the image link database"""
        self.db_path = db_path
        if db_path != ':memory:':
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self.init_database()

    def init_database(self):
        """Create tables and indexes"""
        cursor = self.conn.cursor()
        try:
            # Catalog collaborator - read-only for the reconciler
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    code TEXT,
                    name TEXT,
                    active INTEGER DEFAULT 1,
                    created_at TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS image_links (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    source_filename TEXT,
                    source_path TEXT,
                    confidence INTEGER,
                    auto_matched INTEGER DEFAULT 0,
                    is_primary INTEGER DEFAULT 1,
                    status TEXT DEFAULT 'active',
                    metadata TEXT,
                    created_at TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS image_candidates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id TEXT NOT NULL,
                    image_url TEXT NOT NULL,
                    confidence INTEGER,
                    extracted_code TEXT,
                    source_filename TEXT,
                    metadata TEXT,
                    status TEXT DEFAULT 'pending'
                        CHECK (status IN ('pending', 'approved', 'rejected')),
                    rejection_reason TEXT,
                    created_at TIMESTAMP,
                    reviewed_at TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS scan_reports (
                    session_id TEXT PRIMARY KEY,
                    status TEXT,
                    started_at TIMESTAMP,
                    finished_at TIMESTAMP,
                    report_json TEXT
                )
            ''')

            # Databases created before links recorded their storage path
            cursor.execute('''
                SELECT COUNT(*) FROM pragma_table_info('image_links')
                WHERE name='source_path'
            ''')
            if cursor.fetchone()[0] == 0:
                cursor.execute('ALTER TABLE image_links ADD COLUMN source_path TEXT')

            cursor.execute('CREATE INDEX IF NOT EXISTS idx_product_code ON products(code)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_link_product ON image_links(product_id, status)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_candidate_status ON image_candidates(status)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_candidate_product ON image_candidates(product_id)')
            # At most one active primary link per product
            cursor.execute('''
                CREATE UNIQUE INDEX IF NOT EXISTS ux_active_primary_link
                ON image_links(product_id) WHERE status = 'active' AND is_primary = 1
            ''')

            self.conn.commit()
        finally:
            cursor.close()

    @contextmanager
    def _write(self):
        """Serialized write transaction; rolls back on any error"""
        with self._lock:
            cursor = self.conn.cursor()
            try:
                yield cursor
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
            finally:
                cursor.close()

    def _read(self, query: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                return cursor.execute(query, tuple(params)).fetchall()
            finally:
                cursor.close()

    # -- catalog -------------------------------------------------------------

    def upsert_products(self, products: Iterable[Product]) -> int:
        """Insert or replace catalog products (used to seed the catalog)"""
        count = 0
        try:
            with self._write() as cursor:
                for product in products:
                    cursor.execute('''
                        INSERT INTO products (id, code, name, active, created_at)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            code = excluded.code, name = excluded.name, active = excluded.active
                    ''', (product.id, product.code, product.name, int(product.active), datetime.now().isoformat()))
                    count += 1
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to save products: {str(e)}") from e
        return count

    def list_active_products_with_code(self) -> List[Product]:
        """Active catalog products that carry a code"""
        try:
            rows = self._read('''
                SELECT id, code, name, active FROM products
                WHERE active = 1 AND code IS NOT NULL AND TRIM(code) != ''
                ORDER BY id
            ''')
        except sqlite3.Error as e:
            raise CatalogAccessFailure(f"Failed to read products: {str(e)}") from e
        return [Product(id=row['id'], code=row['code'], name=row['name'] or '', active=bool(row['active']))
                for row in rows]

    # -- image links ---------------------------------------------------------

    def insert_image_link(self, product_id: str, image_url: str, confidence: int, auto_matched: bool,
                          metadata: Dict = None, source_filename: str = None,
                          source_path: str = None) -> int:
        """Create an active primary link; DuplicateLinkSkip if the product has one"""
        try:
            with self._write() as cursor:
                cursor.execute('''
                    INSERT INTO image_links (
                        product_id, image_url, source_filename, source_path, confidence, auto_matched,
                        is_primary, status, metadata, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ''', (product_id, image_url, source_filename, source_path, confidence, int(auto_matched),
                      LINK_ACTIVE, json.dumps(metadata or {}), datetime.now().isoformat()))
                link_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateLinkSkip(product_id) from e
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to link image to product {product_id}: {str(e)}") from e

        logger.info(f"Linked {source_filename or image_url} -> product {product_id} ({confidence}%)")
        return link_id

    def has_active_link(self, product_id: str) -> bool:
        rows = self._read('''
            SELECT 1 FROM image_links
            WHERE product_id = ? AND status = 'active' AND is_primary = 1
            LIMIT 1
        ''', (product_id,))
        return bool(rows)

    def get_links_for_product(self, product_id: str) -> List[ImageLink]:
        rows = self._read('SELECT * FROM image_links WHERE product_id = ? ORDER BY id', (product_id,))
        return [self._row_to_link(row) for row in rows]

    def list_already_linked_paths(self) -> Set[str]:
        """Storage paths of all images that already back an active link"""
        rows = self._read('''
            SELECT source_path FROM image_links
            WHERE status = 'active' AND source_path IS NOT NULL
        ''')
        return {row['source_path'] for row in rows}

    def list_active_link_urls(self) -> Set[str]:
        """Image URLs of all active links, including links made outside a scan"""
        rows = self._read("SELECT image_url FROM image_links WHERE status = 'active'")
        return {row['image_url'] for row in rows}

    # -- candidates ----------------------------------------------------------

    def insert_image_candidate(self, product_id: str, image_url: str, confidence: int,
                               extracted_code: str, source_filename: str, metadata: Dict = None) -> int:
        try:
            with self._write() as cursor:
                cursor.execute('''
                    INSERT INTO image_candidates (
                        product_id, image_url, confidence, extracted_code, source_filename,
                        metadata, status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (product_id, image_url, confidence, extracted_code, source_filename,
                      json.dumps(metadata or {}), CANDIDATE_PENDING, datetime.now().isoformat()))
                candidate_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to save candidate for product {product_id}: {str(e)}") from e

        logger.info(f"Candidate {candidate_id}: {source_filename} -> product {product_id} ({confidence}%)")
        return candidate_id

    def has_pending_candidate(self, product_id: str, image_url: str) -> bool:
        rows = self._read('''
            SELECT 1 FROM image_candidates
            WHERE product_id = ? AND image_url = ? AND status = 'pending'
            LIMIT 1
        ''', (product_id, image_url))
        return bool(rows)

    def get_candidate(self, candidate_id: int) -> Optional[ImageCandidate]:
        rows = self._read('SELECT * FROM image_candidates WHERE id = ?', (candidate_id,))
        return self._row_to_candidate(rows[0]) if rows else None

    def list_candidates(self, status: Optional[str] = CANDIDATE_PENDING, product_id: str = None,
                        search: str = None, min_confidence: int = None, limit: int = 100) -> List[ImageCandidate]:
        """Candidates filtered by status/product and free text over filename or code"""
        conditions = []
        params = []

        if status and status != 'all':
            conditions.append('status = ?')
            params.append(status)
        if product_id:
            conditions.append('product_id = ?')
            params.append(product_id)
        if search:
            conditions.append("(LOWER(source_filename) LIKE ? OR LOWER(extracted_code) LIKE ?)")
            pattern = f"%{search.lower()}%"
            params.extend([pattern, pattern])
        if min_confidence is not None:
            conditions.append('confidence >= ?')
            params.append(min_confidence)

        query = 'SELECT * FROM image_candidates'
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        query += ' ORDER BY confidence DESC, id ASC LIMIT ?'
        params.append(limit)

        return [self._row_to_candidate(row) for row in self._read(query, params)]

    def update_candidate_status(self, candidate_id: int, status: str, reason: str = None) -> None:
        """Move a pending candidate to a terminal status"""
        if status not in CANDIDATE_STATUSES or status == CANDIDATE_PENDING:
            raise ValueError(f"Invalid candidate status: {status}")

        try:
            with self._write() as cursor:
                cursor.execute('''
                    UPDATE image_candidates SET status = ?, rejection_reason = ?, reviewed_at = ?
                    WHERE id = ? AND status = 'pending'
                ''', (status, reason, datetime.now().isoformat(), candidate_id))
                if cursor.rowcount == 0:
                    raise InvalidCandidateState(candidate_id, self._candidate_status(cursor, candidate_id))
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to update candidate {candidate_id}: {str(e)}") from e

    def approve_candidate(self, candidate: ImageCandidate) -> int:
        """Create the candidate's link and mark it approved in one transaction"""
        metadata = dict(candidate.metadata or {})
        metadata['candidate_id'] = candidate.id
        try:
            with self._write() as cursor:
                cursor.execute('''
                    UPDATE image_candidates SET status = ?, reviewed_at = ?
                    WHERE id = ? AND status = 'pending'
                ''', (CANDIDATE_APPROVED, datetime.now().isoformat(), candidate.id))
                if cursor.rowcount == 0:
                    raise InvalidCandidateState(candidate.id, self._candidate_status(cursor, candidate.id))

                cursor.execute('''
                    INSERT INTO image_links (
                        product_id, image_url, source_filename, source_path, confidence, auto_matched,
                        is_primary, status, metadata, created_at
                    ) VALUES (?, ?, ?, ?, ?, 0, 1, ?, ?, ?)
                ''', (candidate.product_id, candidate.image_url, candidate.source_filename,
                      metadata.get('storage_path'),
                      candidate.confidence, LINK_ACTIVE, json.dumps(metadata), datetime.now().isoformat()))
                link_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateLinkSkip(candidate.product_id) from e
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to approve candidate {candidate.id}: {str(e)}") from e

        logger.info(f"Approved candidate {candidate.id} -> link {link_id}")
        return link_id

    @staticmethod
    def _candidate_status(cursor: sqlite3.Cursor, candidate_id: int) -> str:
        row = cursor.execute('SELECT status FROM image_candidates WHERE id = ?', (candidate_id,)).fetchone()
        return row['status'] if row else 'missing'

    # -- scan reports --------------------------------------------------------

    def save_scan_report(self, report: ScanReport, started_at: datetime, finished_at: datetime) -> None:
        try:
            with self._write() as cursor:
                cursor.execute('''
                    INSERT OR REPLACE INTO scan_reports (session_id, status, started_at, finished_at, report_json)
                    VALUES (?, ?, ?, ?, ?)
                ''', (report.session_id, report.status, started_at.isoformat(), finished_at.isoformat(), json.dumps(report.to_dict())))
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to save scan report: {str(e)}") from e

    def get_latest_scan_report(self) -> Optional[ScanReport]:
        rows = self._read('''
            SELECT report_json FROM scan_reports
            ORDER BY finished_at DESC, rowid DESC LIMIT 1
        ''')
        if not rows:
            return None
        return ScanReport.from_dict(json.loads(rows[0]['report_json']))

    # -- statistics / export -------------------------------------------------

    def get_statistics(self) -> Dict:
        """Overall catalog, link and candidate counts"""
        total = self._read('SELECT COUNT(*) AS cnt FROM products WHERE active = 1')[0]['cnt']
        linked = self._read('''
            SELECT COUNT(DISTINCT product_id) AS cnt FROM image_links WHERE status = 'active'
        ''')[0]['cnt']
        auto = self._read('''
            SELECT COUNT(*) AS cnt FROM image_links WHERE status = 'active' AND auto_matched = 1
        ''')[0]['cnt']
        status_rows = self._read('SELECT status, COUNT(*) AS cnt FROM image_candidates GROUP BY status')
        status_dict = {row['status']: row['cnt'] for row in status_rows}

        return {
            'total_products': total,
            'products_with_images': linked,
            'products_without_images': max(total - linked, 0),
            'auto_matched_links': auto,
            'pending_candidates': status_dict.get('pending', 0),
            'approved_candidates': status_dict.get('approved', 0),
            'rejected_candidates': status_dict.get('rejected', 0),
            'coverage_percentage': (linked / total * 100) if total > 0 else 0
        }

    def export_candidates(self, output_path: str, status_filter: str = 'all') -> bool:
        """Export candidates to CSV or Excel (chosen by extension)"""
        try:
            query = 'SELECT * FROM image_candidates'
            params = None
            if status_filter in CANDIDATE_STATUSES:
                query += ' WHERE status = ?'
                params = (status_filter,)
            query += ' ORDER BY id'

            with self._lock:
                df = pd.read_sql_query(query, self.conn, params=params)

            logger.info(f"Exporting {len(df)} candidates to {output_path}")
            if output_path.lower().endswith(('.xlsx', '.xls')):
                df.to_excel(output_path, index=False, engine='openpyxl')
            else:
                df.to_csv(output_path, index=False)
            return os.path.exists(output_path)

        except Exception as e:
            logger.error(f"Export error: {str(e)}")
            return False

    # -- row mapping ---------------------------------------------------------

    @staticmethod
    def _row_to_candidate(row: sqlite3.Row) -> ImageCandidate:
        return ImageCandidate(
            id=row['id'],
            product_id=row['product_id'],
            image_url=row['image_url'],
            confidence=row['confidence'],
            extracted_code=row['extracted_code'],
            source_filename=row['source_filename'],
            metadata=json.loads(row['metadata'] or '{}'),
            status=row['status'],
            rejection_reason=row['rejection_reason'],
            created_at=str(row['created_at']) if row['created_at'] else None,
            reviewed_at=str(row['reviewed_at']) if row['reviewed_at'] else None,
        )

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> ImageLink:
        return ImageLink(
            id=row['id'],
            product_id=row['product_id'],
            image_url=row['image_url'],
            confidence=row['confidence'],
            auto_matched=bool(row['auto_matched']),
            is_primary=bool(row['is_primary']),
            status=row['status'],
            metadata=json.loads(row['metadata'] or '{}'),
            created_at=str(row['created_at']) if row['created_at'] else None,
        )

    def close(self):
        """Close database connection"""
        self.conn.close()
