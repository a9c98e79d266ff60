"""
Package curation tests for podgraph.
Tests version predicates, curation matching, folding and file loading.
"""

import json

import pytest

from src.podgraph.dependency import Identifier
from src.podgraph.package import Package, RemoteArtifact, VcsInfo, VcsType
from src.podgraph.package_curations import (
    FilePackageCurationProvider,
    PackageCuration,
    PackageCurationData,
    PredicateKind,
    VersionPredicate,
    curate_package,
)


def curation(coordinates, **data):
    return PackageCuration(id=Identifier.from_coordinates(coordinates), data=PackageCurationData(**data))


class TestVersionPredicate:
    """Test classification and evaluation of curation versions."""

    @pytest.mark.parametrize(
        "text,kind",
        [
            ("", PredicateKind.NONE),
            ("1.3", PredicateKind.EXACT),
            ("1.3-SNAPSHOT", PredicateKind.EXACT),
            ("[0.21.0,0.25.0]", PredicateKind.RANGE),
            ("(,1.0]", PredicateKind.RANGE),
            ("^1.2.0", PredicateKind.RANGE),
            ("~1.2.0", PredicateKind.RANGE),
            (">=1.0.0", PredicateKind.RANGE),
            ("1.x || 2.x", PredicateKind.RANGE),
            ("1.0.0 - 2.0.0", PredicateKind.RANGE),
            ("1.*", PredicateKind.RANGE),
        ],
    )
    def test_classify(self, text, kind):
        assert VersionPredicate(text).kind is kind

    def test_exact_requires_string_equality(self):
        predicate = VersionPredicate("1.3")
        assert predicate.matches("1.3")
        assert not predicate.matches("1.3.0")

    def test_none_matches_every_version(self):
        assert VersionPredicate("").matches("anything")

    @pytest.mark.parametrize(
        "version_range,version,expected",
        [
            ("[0.21.0,0.25.0]", "0.21.0", True),
            ("[0.21.0,0.25.0]", "0.25.0", True),
            ("[0.21.0,0.25.0]", "0.26.0", False),
            ("(0.21.0,0.25.0)", "0.21.0", False),
            ("(0.21.0,0.25.0)", "0.22.1", True),
            ("[1.0.0,)", "7.0.0", True),
            ("(,1.0.0]", "1.0.1", False),
            ("^1.2.0", "1.9.9", True),
            ("^1.2.0", "2.0.0", False),
            ("1.0.0 - 2.0.0", "1.5.0", True),
            (">=1.0.0,<2.0.0", "2.0.0", False),
        ],
    )
    def test_range(self, version_range, version, expected):
        assert VersionPredicate(version_range).matches(version) is expected

    def test_range_fails_closed_for_non_semver(self):
        assert not VersionPredicate("[1.0.0,2.0.0]").matches("1.3")
        assert not VersionPredicate("[1.0.0,2.0.0]").matches("not-a-version")

    def test_unparsable_range_matches_nothing(self):
        assert not VersionPredicate("[garbage,)").matches("1.0.0")


class TestPackageCuration:
    """Test applicability and application of single curations."""

    def test_identity_must_match_exactly(self):
        hamcrest = curation("maven:org.hamcrest:hamcrest-core:1.3")

        assert hamcrest.is_applicable(Identifier("maven", "org.hamcrest", "hamcrest-core", "1.3"))
        assert not hamcrest.is_applicable(Identifier("Maven", "org.hamcrest", "hamcrest-core", "1.3"))
        assert not hamcrest.is_applicable(Identifier("maven", "org.example", "hamcrest-core", "1.3"))
        assert not hamcrest.is_applicable(Identifier("maven", "org.hamcrest", "hamcrest-core", "1.2"))

    def test_apply_overrides_only_set_fields(self):
        pkg_id = Identifier("Pod", "", "SOCKit", "1.1")
        package = Package(
            id=pkg_id,
            declared_licenses=frozenset(["MIT"]),
            description="String <-> object coding",
            vcs=VcsInfo(type=VcsType.GIT, url="https://github.com/NimbusKit/sockit.git", revision="1.1"),
        )

        curated = curate_package(
            package,
            [
                curation(
                    "Pod::SOCKit:1.1",
                    comment="License file says Apache",
                    concluded_license="Apache-2.0",
                    vcs=None,
                ),
            ],
        )

        assert curated.package.concluded_license == "Apache-2.0"
        assert curated.package.declared_licenses == frozenset(["MIT"])
        assert curated.package.description == "String <-> object coding"
        assert curated.package.vcs == package.vcs
        assert len(curated.curations) == 1

    def test_later_curations_win(self):
        package = Package(id=Identifier("Pod", "", "SOCKit", "1.1"))
        curated = curate_package(
            package,
            [
                curation("Pod::SOCKit:", homepage_url="https://first.example.com", description="first"),
                curation("Pod::SOCKit:1.1", homepage_url="https://second.example.com"),
            ],
        )

        assert curated.package.homepage_url == "https://second.example.com"
        assert curated.package.description == "first"
        assert [c.id.version for c in curated.curations] == ["", "1.1"]

    def test_vcs_fields_are_curated_individually(self):
        package = Package(
            id=Identifier("Pod", "", "SOCKit", "1.1"),
            vcs=VcsInfo(type=VcsType.GIT, url="https://old.example.com/sockit.git", revision="1.1"),
        )
        record = {"id": "Pod::SOCKit:1.1", "curations": {"vcs": {"url": "https://new.example.com/sockit.git"}}}

        curated = curate_package(package, [PackageCuration.from_dict(record)])

        assert curated.package.vcs.url == "https://new.example.com/sockit.git"
        assert curated.package.vcs.revision == "1.1"
        assert curated.package.vcs.type is VcsType.GIT

    def test_apply_rejects_other_packages(self):
        package = Package(id=Identifier("Pod", "", "SOCKit", "1.1"))
        with pytest.raises(ValueError):
            curate_package(package, [curation("Pod::TransitionKit:2.2.1", comment="wrong")])

    def test_from_dict(self):
        parsed = PackageCuration.from_dict(
            {
                "id": "Pod::Binary:1.0",
                "curations": {
                    "declared_licenses": "MIT",
                    "authors": ["Jane Doe"],
                    "binary_artifact": {
                        "url": "https://example.com/Binary-1.0.zip",
                        "hash": {"value": "abc", "algorithm": "SHA-1"},
                    },
                    "source_artifact": "https://example.com/Binary-1.0-src.zip",
                },
            }
        )

        assert parsed.data.declared_licenses == frozenset(["MIT"])
        assert parsed.data.authors == frozenset(["Jane Doe"])
        assert parsed.data.binary_artifact == RemoteArtifact.from_dict(
            {"url": "https://example.com/Binary-1.0.zip", "hash": {"value": "abc", "algorithm": "SHA-1"}}
        )
        assert parsed.data.source_artifact.url == "https://example.com/Binary-1.0-src.zip"
        assert parsed.data.concluded_license is None

    @pytest.mark.parametrize(
        "record",
        [
            {"curations": {}},
            {"id": "not-coordinates"},
            {"id": "Pod::A:1.0", "curations": {"declared_licenses": 42}},
            {"id": "Pod::A:1.0", "curations": "MIT"},
            {"id": "Pod::A:1.0", "curations": {"binary_artifact": [1, 2]}},
            {"id": "Pod::A:1.0", "curations": {"source_artifact": {"url": "https://example.com/a.zip", "hash": [1]}}},
            {"id": "Pod::A:1.0", "curations": {"vcs": {"type": 5}}},
            {"id": "Pod::A:1.0", "curations": {"vcs": ["Git"]}},
            "Pod::A:1.0",
        ],
    )
    def test_from_dict_rejects_invalid_records(self, record):
        with pytest.raises(ValueError):
            PackageCuration.from_dict(record)


class TestFilePackageCurationProvider:
    """Test loading curations from files."""

    def test_reads_yaml_file(self, curations_file):
        provider = FilePackageCurationProvider([str(curations_file)])
        assert len(provider.package_curations) == 8

    def test_returns_only_matching_curations_for_fixed_version(self, curations_file):
        provider = FilePackageCurationProvider([str(curations_file)])
        pkg_id = Identifier("maven", "org.hamcrest", "hamcrest-core", "1.3")

        curations = provider.get_curations_for(pkg_id)

        assert len(curations) == 4
        assert all(c.is_applicable(pkg_id) for c in curations)
        others = [c for c in provider.package_curations if c not in curations]
        assert len(others) == 4
        assert not any(c.is_applicable(pkg_id) for c in others)

    def test_keeps_load_order(self, curations_file):
        provider = FilePackageCurationProvider([str(curations_file)])
        pkg_id = Identifier("maven", "org.hamcrest", "hamcrest-core", "1.3")

        comments = [c.data.comment for c in provider.get_curations_for(pkg_id)]
        assert comments == [
            "Concluded license for 1.3",
            "Declared licenses for 1.3",
            "Homepage for 1.3",
            "Repository for every version",
        ]

    def test_returns_only_matching_curations_for_version_range(self, curations_file):
        provider = FilePackageCurationProvider([str(curations_file)])

        assert len(provider.get_curations_for(Identifier("npm", "", "ramda", "0.21.0"))) == 1
        assert len(provider.get_curations_for(Identifier("npm", "", "ramda", "0.25.0"))) == 1
        assert provider.get_curations_for(Identifier("npm", "", "ramda", "0.26.0")) == []

    def test_curate_folds_matching_curations(self, curations_file):
        provider = FilePackageCurationProvider([str(curations_file)])
        package = Package(id=Identifier("maven", "org.hamcrest", "hamcrest-core", "1.3"))

        curated = provider.curate(package)

        assert curated.package.concluded_license == "BSD-3-Clause"
        assert curated.package.declared_licenses == frozenset(["BSD-2-Clause"])
        assert curated.package.homepage_url == "http://hamcrest.org/JavaHamcrest/"
        assert curated.package.vcs.url == "https://github.com/hamcrest/JavaHamcrest.git"
        assert len(curated.curations) == 4

    def test_reads_multiple_files_from_directory(self, temp_dir):
        curations_dir = temp_dir / "curations"
        curations_dir.mkdir()
        (curations_dir / "b.yml").write_text(
            '- id: "maven:org.foo:bar:0.42"\n  curations:\n    comment: "bar"\n', encoding="utf-8"
        )
        (curations_dir / "a.json").write_text(
            json.dumps([{"id": "maven:org.ossreviewtoolkit:example:1.0", "curations": {"comment": "example"}}]),
            encoding="utf-8",
        )
        (curations_dir / "notes.txt").write_text("not a curation file", encoding="utf-8")

        provider = FilePackageCurationProvider([str(curations_dir)])

        assert [c.data.comment for c in provider.package_curations] == ["example", "bar"]
        for pkg_id in [
            Identifier("maven", "org.ossreviewtoolkit", "example", "1.0"),
            Identifier("maven", "org.foo", "bar", "0.42"),
        ]:
            assert len(provider.get_curations_for(pkg_id)) == 1

    def test_bad_file_does_not_block_others(self, temp_dir, curations_file):
        broken = temp_dir / "broken.yml"
        broken.write_text("- id: [unclosed\n", encoding="utf-8")
        missing = temp_dir / "missing.yml"

        provider = FilePackageCurationProvider([str(broken), str(missing), str(curations_file)])

        assert len(provider.package_curations) == 8
        assert provider.failed_sources == [str(broken), str(missing)]

    def test_bad_record_is_skipped(self, temp_dir):
        path = temp_dir / "partial.yml"
        path.write_text(
            '- id: "Pod::Good:1.0"\n'
            "  curations:\n"
            '    comment: "kept"\n'
            "- curations:\n"
            '    comment: "no id"\n'
            '- id: "Pod::Other:1.0"\n'
            "  curations:\n"
            "    declared_licenses: 42\n",
            encoding="utf-8",
        )

        provider = FilePackageCurationProvider([str(path)])

        assert [c.data.comment for c in provider.package_curations] == ["kept"]
        assert provider.failed_sources == []

    def test_records_with_wrong_nested_types_are_skipped(self, temp_dir, curations_file):
        path = temp_dir / "nested.yml"
        path.write_text(
            '- id: "Pod::Artifact:1.0"\n'
            "  curations:\n"
            "    binary_artifact: [1, 2]\n"
            '- id: "Pod::Repository:1.0"\n'
            "  curations:\n"
            "    vcs:\n"
            "      type: 5\n"
            '- id: "Pod::Good:1.0"\n'
            "  curations:\n"
            '    comment: "kept"\n',
            encoding="utf-8",
        )

        provider = FilePackageCurationProvider([str(path), str(curations_file)])

        assert len(provider.package_curations) == 9
        assert provider.package_curations[0].data.comment == "kept"
        assert provider.failed_sources == []

    def test_empty_file(self, temp_dir):
        path = temp_dir / "empty.yml"
        path.write_text("", encoding="utf-8")

        provider = FilePackageCurationProvider([str(path)])

        assert provider.package_curations == []
