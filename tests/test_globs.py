import pytest

from ciagent.errors import GlobError
from ciagent.pipeline.globs import compile_glob, match_any


@pytest.mark.parametrize(
    "pattern, path, want",
    [
        ("foo", "foo", True),
        ("foo", "foo/bar", False),
        ("*.go", "main.go", True),
        ("*.go", "cmd/main.go", False),
        ("**.go", "cmd/main.go", True),
        ("**/*.go", "main.go", True),
        ("**/*.go", "internal/x/y.go", True),
        ("foo/**", "foo/bar/baz.txt", True),
        ("foo/**", "food/bar", False),
        ("docs/*.md", "docs/a.md", True),
        ("docs/*.md", "docs/sub/a.md", False),
        ("file?.txt", "file1.txt", True),
        ("file?.txt", "file/.txt", False),
        ("file[0-9].txt", "file7.txt", True),
        ("file[!0-9].txt", "filex.txt", True),
        ("file[!0-9].txt", "file7.txt", False),
        ("file[^a].txt", "fileb.txt", True),
        ("*.{yml,yaml}", "pipeline.yaml", True),
        ("*.{yml,yaml}", "pipeline.json", False),
        ("{src/{a,b},lib}/**", "src/b/x.py", True),
        ("{src/{a,b},lib}/**", "src/c/x.py", False),
        ("\\*.txt", "*.txt", True),
        ("\\*.txt", "a.txt", False),
        ("a.b", "axb", False),
        ("(x)+", "(x)+", True),
    ],
)
def test_match(pattern, path, want):
    assert compile_glob(pattern).match(path) is want


@pytest.mark.parametrize(
    "pattern",
    ["bar/**/[asdf[[[[asdf", "{a{b{c{d", "file[abc", "trailing\\", "x/{a,b", "src/[z-a].py"],
)
def test_malformed_patterns_raise(pattern):
    with pytest.raises(GlobError):
        compile_glob(pattern)


def test_closing_brace_without_opening_is_literal():
    assert compile_glob("a}b").match("a}b")
    assert compile_glob("a,b").match("a,b")


def test_match_any():
    globs = [compile_glob("*.md"), compile_glob("src/**")]
    assert match_any(globs, "README.md")
    assert match_any(globs, "src/pkg/mod.py")
    assert not match_any(globs, "tests/test_x.py")
    assert not match_any([], "anything")


def test_reversed_range_is_a_glob_error():
    with pytest.raises(GlobError, match="bad character range"):
        compile_glob("[z-a]_TOKEN")
