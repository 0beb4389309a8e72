"""Tests for the project scanner."""

from __future__ import annotations

import pytest

from infrabump.bump.scanner import find_repository_root, gitignore_predicate, iter_projects
from infrabump.core.config import BumpOptions

TF = 'module "x" {\n  source = "a/b/c"\n  version = "1.0.0"\n}\n'
CHART = "apiVersion: v2\nname: c\nversion: 0.1.0\n"


@pytest.fixture
def tree(write, tmp_path):
    write("terraform/main.tf", TF)
    write("terraform/.terraform/modules/x/terraform/main.tf", TF)
    write("charts/web/Chart.yaml", CHART)
    write("vendor/terraform/main.tf", TF)
    write("deep/a/b/c/d/Chart.yaml", CHART)
    write("deep/a/b/c/d/e/Chart.yaml", CHART)
    write("docs/README.md", "hello\n")
    write(".gitignore", "vendor/\n")
    return tmp_path


def _roots(projects, base):
    return sorted(p.root.relative_to(base).as_posix() for p in projects)


class TestIterProjects:
    def test_recursive_default_depth(self, tree):
        projects = list(iter_projects(tree, BumpOptions(recursive=True)))
        assert _roots(projects, tree) == ["charts/web", "deep/a/b/c/d", "terraform"]

    def test_max_depth_bounds_walk(self, tree):
        projects = list(iter_projects(tree, BumpOptions(recursive=True, max_depth=2)))
        assert _roots(projects, tree) == ["charts/web", "terraform"]

    def test_depth_zero_is_root_only(self, tree):
        opts = BumpOptions(recursive=True, max_depth=0)
        assert list(iter_projects(tree, opts)) == []

    def test_non_recursive_classifies_root(self, tree):
        projects = list(iter_projects(tree / "terraform", BumpOptions()))
        assert len(projects) == 1
        assert projects[0].technology == "terraform"
        assert len(projects[0].dependencies) == 1

    def test_non_recursive_does_not_descend(self, tree):
        assert list(iter_projects(tree, BumpOptions())) == []

    def test_no_ignore_includes_gitignored(self, tree):
        opts = BumpOptions(recursive=True, no_ignore=True)
        roots = _roots(iter_projects(tree, opts), tree)
        assert "vendor/terraform" in roots

    def test_terraform_cache_never_scanned(self, tree):
        opts = BumpOptions(recursive=True, max_depth=10, no_ignore=True)
        roots = _roots(iter_projects(tree, opts), tree)
        assert not any(".terraform" in r for r in roots)

    def test_custom_ignore_predicate(self, tree):
        opts = BumpOptions(recursive=True)
        projects = iter_projects(tree, opts, ignore=lambda p: p.name == "charts")
        assert _roots(projects, tree) == ["deep/a/b/c/d", "terraform", "vendor/terraform"]

    def test_lazy(self, tree):
        gen = iter_projects(tree, BumpOptions(recursive=True))
        first = next(gen)
        assert first.root == tree / "charts" / "web"

    def test_scan_errors_collected(self, write, tmp_path):
        write("terraform/main.tf", 'module "x" {\n  source = "a/b/c"\n')
        errors = []
        projects = list(iter_projects(tmp_path / "terraform", BumpOptions(), errors=errors))
        assert len(projects) == 1
        assert projects[0].dependencies == ()
        assert len(errors) == 1


class TestGitignorePredicate:
    def test_patterns(self, write, tmp_path):
        write(".gitignore", "build/\n*.bak\n")
        (tmp_path / "build").mkdir()
        (tmp_path / "src").mkdir()
        ignored = gitignore_predicate(tmp_path)
        assert ignored(tmp_path / "build")
        assert not ignored(tmp_path / "src")
        assert ignored(tmp_path / "x.bak")
        assert not ignored(tmp_path)

    def test_git_info_exclude(self, write, tmp_path):
        write(".git/info/exclude", "secret/\n")
        (tmp_path / "secret").mkdir()
        assert gitignore_predicate(tmp_path)(tmp_path / "secret")

    def test_no_ignore_files(self, tmp_path):
        (tmp_path / "anything").mkdir()
        assert not gitignore_predicate(tmp_path)(tmp_path / "anything")

    def test_nested_gitignore_relative_to_its_directory(self, write, tmp_path):
        write("infra/.gitignore", "vendor/\n")
        write("infra/vendor/terraform/main.tf", TF)
        write("vendor/terraform/main.tf", TF)
        opts = BumpOptions(recursive=True)
        assert _roots(iter_projects(tmp_path, opts), tmp_path) == ["vendor/terraform"]

    def test_parent_repository_rules_apply_to_subdirectory_root(self, write, tmp_path):
        (tmp_path / ".git").mkdir()
        write(".gitignore", "generated/\n")
        write("infra/generated/terraform/main.tf", TF)
        write("infra/terraform/main.tf", TF)
        projects = iter_projects(tmp_path / "infra", BumpOptions(recursive=True))
        assert _roots(projects, tmp_path) == ["infra/terraform"]

    def test_nested_negation_reincludes(self, write, tmp_path):
        write(".gitignore", "build*/\n")
        write("infra/.gitignore", "!build-infra/\n")
        (tmp_path / "build").mkdir()
        (tmp_path / "infra" / "build-infra").mkdir()
        (tmp_path / "infra" / "build-other").mkdir()
        ignored = gitignore_predicate(tmp_path)
        assert ignored(tmp_path / "build")
        assert not ignored(tmp_path / "infra" / "build-infra")
        assert ignored(tmp_path / "infra" / "build-other")

    def test_global_excludes(self, write, tmp_path):
        excludes = write("home/git/ignore", "scratch/\n")
        (tmp_path / "repo" / "scratch").mkdir(parents=True)
        ignored = gitignore_predicate(tmp_path / "repo", global_excludes=excludes)
        assert ignored(tmp_path / "repo" / "scratch")

    def test_repository_root_found_above(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / "a" / "b").mkdir(parents=True)
        assert find_repository_root(tmp_path / "a" / "b") == tmp_path
