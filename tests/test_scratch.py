import os
import string
import time

from plasmagrid.schema import ScratchConfig
from plasmagrid.scratch import ScratchSpace, purge_stale, random_suffix


def test_random_suffix():
    suffix = random_suffix(16)
    assert len(suffix) == 16
    assert set(suffix) <= set(string.ascii_letters + string.digits)


def test_scratch_files_are_removed_unless_kept(tmp_path):
    config = ScratchConfig(dir=tmp_path / "scratch", prefix="hwa_", suffix_length=8)
    with ScratchSpace(config) as scratch:
        temporary = scratch.new_path(".txt")
        temporary.write_text("x")
        result = scratch.keep(scratch.new_path("vot", directory=tmp_path / "data"))
        result.write_text("<VOTABLE/>")
        assert temporary.name.startswith("hwa_")
        assert len(temporary.stem) == len("hwa_") + 8
        assert result.suffix == ".vot"
    assert not temporary.exists()
    assert result.exists()


def test_purge_stale(tmp_path):
    old = tmp_path / "hwa_old.txt"
    new = tmp_path / "hwa_new.txt"
    other = tmp_path / "keep_old.txt"
    for path in (old, new, other):
        path.write_text("x")
    stale = time.time() - 7200
    os.utime(old, (stale, stale))
    os.utime(other, (stale, stale))

    assert purge_stale(tmp_path, "hwa_", 3600) == 1
    assert not old.exists()
    assert new.exists()
    assert other.exists()
    assert purge_stale(tmp_path / "absent", "hwa_", 3600) == 0
