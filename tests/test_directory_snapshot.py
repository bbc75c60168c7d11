from pathlib import Path

from src.physarum.domain.errors import WorkspaceIOError
from src.physarum.services.directory_snapshot import (
    DEPTH_LIMIT_LABEL,
    NO_WORKSPACE_TEXT,
    DirectorySnapshotBuilder,
    render_tree,
)
from src.physarum.services.workspace import DirEntry, LocalWorkspace


def test_depth_one_stops_at_sentinel(tmp_path):
    (tmp_path / "sub" / "deep").mkdir(parents=True)
    (tmp_path / "sub" / "deep" / "file.txt").write_text("x")
    nodes = DirectorySnapshotBuilder(LocalWorkspace([tmp_path])).build([tmp_path], max_depth=1)
    assert len(nodes) == 1
    sub = nodes[0].children[0]
    assert sub.name == "sub" and sub.kind == "folder"
    assert len(sub.children) == 1
    assert sub.children[0].kind == "depth_limit"
    assert sub.children[0].name == DEPTH_LIMIT_LABEL


def test_folders_first_then_names_and_exclusions(workspace_dir):
    (workspace_dir / "b_dir").mkdir()
    (workspace_dir / "build").mkdir()
    nodes = DirectorySnapshotBuilder(LocalWorkspace([workspace_dir])).build([workspace_dir], max_depth=3)
    names = [n.name for n in nodes[0].children]
    assert names == ["b_dir", "src", "a.txt", "img1.png", "img2.jpg"]
    kinds = {n.name: n.kind for n in nodes[0].children}
    assert kinds["img1.png"] == "image"
    assert kinds["a.txt"] == "file"
    assert nodes[0].children[1].children[0].path == "src/app.py"


def test_unreadable_directory_becomes_error_leaf():
    class FlakyReader:
        def list_directory(self, path):
            path = Path(path)
            if path.name == "locked":
                raise WorkspaceIOError(str(path), "Permission denied")
            if path.name == "root":
                return [DirEntry("locked", True), DirEntry("open", True), DirEntry("z.txt", False)]
            return [DirEntry("inner.txt", False)]

        def read_file(self, path):
            return b""

    nodes = DirectorySnapshotBuilder(FlakyReader()).build([Path("/ws/root")], max_depth=3)
    children = nodes[0].children
    assert [c.name for c in children] == ["locked", "open", "z.txt"]
    assert children[0].children[0].kind == "error"
    assert "Permission denied" in children[0].children[0].name
    assert children[1].children[0].name == "inner.txt"


def test_render_tree_connectors(tmp_path):
    root = tmp_path / "proj"
    (root / "pkg").mkdir(parents=True)
    (root / "pkg" / "mod.py").write_text("")
    (root / "README.md").write_text("")
    nodes = DirectorySnapshotBuilder(LocalWorkspace([root])).build([root], max_depth=3)
    text = render_tree(nodes)
    assert text.splitlines() == [
        "DIRECTORY STRUCTURE:",
        "proj",
        "├── pkg/",
        "│   └── mod.py",
        "└── README.md",
    ]


def test_render_tree_without_roots():
    assert render_tree([]) == NO_WORKSPACE_TEXT
