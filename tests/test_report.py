"""
Tests for the scan report aggregate
"""
import pandas as pd

from sku_linker.report import ScanReport


def test_unresolved_list_is_capped():
    report = ScanReport(max_unresolved=2)
    for i in range(3):
        report.add_unresolved(f"img{i}.jpg", [str(i) * 3], 1, 'no_catalog_match')

    assert report.unlinked_images == 3
    assert [u.filename for u in report.unresolved] == ["img0.jpg", "img1.jpg"]


def test_error_list_is_capped():
    report = ScanReport(max_errors=2)
    for i in range(5):
        report.add_error(f"error {i}")

    assert report.error_count == 5
    assert report.errors == ["error 0", "error 1"]


def test_dict_round_trip():
    report = ScanReport(session_id='abc', status='completed', total_images=4, direct_links_created=1)
    report.add_unresolved("logo.png", [], 0, 'extraction_empty')

    data = report.to_dict()
    assert 'max_errors' not in data
    assert data['unresolved'][0]['reason'] == 'extraction_empty'

    restored = ScanReport.from_dict(data)
    assert restored.session_id == 'abc'
    assert restored.direct_links_created == 1
    assert restored.unresolved[0].filename == "logo.png"


def test_summary_mentions_counts():
    report = ScanReport(status='completed', total_images=10, direct_links_created=3, candidates_created=2)

    summary = report.summary()
    assert summary.startswith('completed')
    assert '3 direct links' in summary
    assert '2 candidates' in summary


def test_export_unresolved_csv(tmp_path):
    report = ScanReport()
    report.add_unresolved("IMG_9999.jpg", ["9999", "09999"], 2, 'no_catalog_match')

    path = report.export_unresolved(str(tmp_path / 'out' / 'unresolved.csv'))

    df = pd.read_csv(path, dtype=str)
    assert list(df['filename']) == ["IMG_9999.jpg"]
    assert df.loc[0, 'extracted_codes'] == "9999, 09999"


def test_export_unresolved_excel(tmp_path):
    report = ScanReport()
    report.add_unresolved("logo.png", [], 0, 'extraction_empty')

    path = report.export_unresolved(str(tmp_path / 'unresolved.xlsx'))

    df = pd.read_excel(path, engine='openpyxl')
    assert list(df['reason']) == ['extraction_empty']
