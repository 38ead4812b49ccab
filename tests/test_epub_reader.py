from __future__ import annotations

from pathlib import Path

import pytest

from cont_srv.app.services import ArchiveOpenError, NavPoint, ResourceNotFound, open_archive
from epub_builders import (
    EMPTY_OPF,
    NO_TOC_OPF,
    PNG_BYTES,
    V2_OPF,
    chapter,
    corrupt_member,
    make_empty_epub,
    make_no_toc_epub,
    make_v2_epub,
    make_v3_epub,
    write_epub,
)


def _flatten(points, depth=0):
    for point in points:
        yield depth, point
        yield from _flatten(point.children, depth + 1)


def test_ncx_toc_is_nested_and_resolved_against_package(tmp_path: Path) -> None:
    with open_archive(make_v2_epub(tmp_path / "v2.epub")) as archive:
        flat = [(depth, point.label, point.target) for depth, point in _flatten(archive.toc)]

    assert flat == [
        (0, "Valentin Haüy - The father of the education for the blind", "OEBPS/chap1.html#ops1"),
        (1, "Early years", "OEBPS/chap1.html#early"),
        (2, "Paris & Lyon", "OEBPS/chap1.html#cities"),
        (0, "The Institute", "OEBPS/chap2.html"),
        (0, "Legacy", "OEBPS/chap3.html"),
    ]


def test_nav_document_toc_skips_landmarks(tmp_path: Path) -> None:
    with open_archive(make_v3_epub(tmp_path / "nav.epub")) as archive:
        toc = archive.toc

    assert [point.label for point in toc] == [
        "SECTION III FOLK TALES",
        "SECTION IV",
        "The End",
    ]
    assert toc[0].target == "EPUB/text/s03.xhtml"
    # An unlinked heading points at its first child entry.
    assert toc[1].target == "EPUB/text/s04.xhtml#pgepubid00492"
    assert toc[1].children == (
        NavPoint(
            label="SECTION IV FAIRY STORIES—MODERN FANTASTIC TALES",
            target="EPUB/text/s04.xhtml#pgepubid00492",
        ),
    )
    assert toc[2].target == "EPUB/text/s05 end.xhtml"


def test_resources_and_spine(tmp_path: Path) -> None:
    with open_archive(make_v2_epub(tmp_path / "v2.epub")) as archive:
        assert archive.spine == ("c1", "c2", "c3")
        assert archive.resources["img"].inner_path == "OEBPS/images/cover.png"
        assert archive.resources["img"].mime == "image/png"
        assert archive.resources["raw"].mime is None
        assert archive.spine_index("c2") == 1
        assert archive.spine_index("notes") is None
        assert archive.first_spine_resource().inner_path == "OEBPS/chap1.html"


def test_lookup_returns_declared_resource_bytes(tmp_path: Path) -> None:
    with open_archive(make_v2_epub(tmp_path / "v2.epub")) as archive:
        resource, body = archive.lookup("OEBPS/images/cover.png")

    assert resource.id == "img"
    assert body == PNG_BYTES


def test_lookup_ignores_members_missing_from_manifest(tmp_path: Path) -> None:
    # The zip holds the container descriptor, but it is not a manifest item.
    with open_archive(make_v2_epub(tmp_path / "v2.epub")) as archive:
        with pytest.raises(ResourceNotFound) as excinfo:
            archive.lookup("META-INF/container.xml")

    assert str(excinfo.value) == "Resource [META-INF/container.xml] not found"


def test_lookup_of_damaged_member(tmp_path: Path) -> None:
    path = make_v2_epub(tmp_path / "v2.epub")
    corrupt_member(path, "OEBPS/chap2.html")

    with open_archive(path) as archive:
        with pytest.raises(ArchiveOpenError) as excinfo:
            archive.lookup("OEBPS/chap2.html")
        assert archive.lookup("OEBPS/chap3.html")[0].id == "c3"

    assert str(excinfo.value).startswith(f"Reading/Parsing epub [{path}] failed: ")


def test_lookup_of_manifest_item_absent_from_zip(tmp_path: Path) -> None:
    path = write_epub(
        tmp_path / "hollow.epub",
        {"content.opf": NO_TOC_OPF.replace("xhtml/", "")},
        opf_path="content.opf",
    )
    with open_archive(path) as archive:
        with pytest.raises(ResourceNotFound):
            archive.lookup("titlepage.xhtml")


def test_archive_without_toc_keeps_spine(tmp_path: Path) -> None:
    with open_archive(make_no_toc_epub(tmp_path / "v3.epub")) as archive:
        assert archive.toc == ()
        assert archive.first_spine_resource().inner_path == "EPUB/xhtml/titlepage.xhtml"


def test_archive_without_toc_and_spine(tmp_path: Path) -> None:
    with open_archive(make_empty_epub(tmp_path / "empty.epub")) as archive:
        assert archive.toc == ()
        assert archive.spine == ()
        assert archive.first_spine_resource() is None


def test_open_missing_file(tmp_path: Path) -> None:
    missing = tmp_path / "nope.epub"
    with pytest.raises(ArchiveOpenError) as excinfo:
        open_archive(missing)

    assert str(excinfo.value).startswith(f"Reading/Parsing epub [{missing}] failed: ")


def test_open_non_zip(tmp_path: Path) -> None:
    path = tmp_path / "broken.epub"
    path.write_bytes(b"this is not a zip archive")
    with pytest.raises(ArchiveOpenError):
        open_archive(path)


@pytest.mark.parametrize(
    "files, opf_path",
    [
        ({"content.opf": V2_OPF}, None),
        ({"content.opf": V2_OPF}, "other.opf"),
        ({"content.opf": "<package><manifest>"}, "content.opf"),
        ({"content.opf": EMPTY_OPF.replace("<spine/>", '<spine><itemref idref="ghost"/></spine>')}, "content.opf"),
        ({"content.opf": '<package xmlns="http://www.idpf.org/2007/opf"><spine/></package>'}, "content.opf"),
    ],
    ids=["no-container", "missing-package", "malformed-package", "unknown-spine-item", "no-manifest"],
)
def test_open_invalid_package(tmp_path: Path, files, opf_path) -> None:
    path = write_epub(tmp_path / "bad.epub", files, opf_path=opf_path)
    with pytest.raises(ArchiveOpenError):
        open_archive(path)


def test_archive_closes_zip_on_exit(tmp_path: Path) -> None:
    archive = open_archive(make_v2_epub(tmp_path / "v2.epub"))
    with archive:
        pass
    with pytest.raises(ValueError):
        archive.lookup("OEBPS/chap1.html")


def test_nav_document_used_when_ncx_is_empty(tmp_path: Path) -> None:
    opf = V2_OPF.replace(
        '<item id="c1" href="chap1.html"',
        '<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>\n'
        '    <item id="c1" href="chap1.html"',
    )
    nav = (
        '<html xmlns="http://www.w3.org/1999/xhtml"><body>'
        '<nav><ol><li><a href="chap2.html">Only entry</a></li></ol></nav>'
        "</body></html>"
    )
    path = write_epub(
        tmp_path / "mixed.epub",
        {
            "OEBPS/content.opf": opf,
            "OEBPS/toc.ncx": '<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/"><navMap/></ncx>',
            "OEBPS/nav.xhtml": nav,
            "OEBPS/chap1.html": chapter("One"),
        },
        opf_path="OEBPS/content.opf",
    )
    with open_archive(path) as archive:
        assert archive.toc == (NavPoint(label="Only entry", target="OEBPS/chap2.html"),)
