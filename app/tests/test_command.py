from rclone_sync_helper.core.config import JobConfig
from rclone_sync_helper.providers.rclone_bisync.command import RESYNC_FLAG, build_command


def _which_all(name: str) -> str:
    return f"/usr/bin/{name}"


def _which_none(_name: str) -> None:
    return None


def test_direct_invocation_with_config_and_extra_args():
    cfg = JobConfig(
        name="docs",
        local_path="/home/u",
        remote="gdrive:",
        rclone_config_path=" /home/u/.config/rclone/rclone.conf ",
        extra_args=["--verbose", "--max-delete", "50"],
        use_nice_ionice=False,
    )

    argv = build_command(cfg, "/home/u/a", "gdrive:a", [RESYNC_FLAG], which=_which_all)

    assert argv == [
        "rclone",
        "bisync",
        "/home/u/a",
        "gdrive:a",
        "--config",
        "/home/u/.config/rclone/rclone.conf",
        "--verbose",
        "--max-delete",
        "50",
        "--resync",
    ]


def test_blank_config_path_is_omitted():
    cfg = JobConfig(name="docs", rclone_config_path="  ", use_nice_ionice=False)
    assert "--config" not in build_command(cfg, "/a", "r:a", which=_which_all)


def test_low_priority_wrapper_when_tools_exist():
    cfg = JobConfig(name="docs")
    argv = build_command(cfg, "/a", "r:a", which=_which_all)
    assert argv[:7] == ["nice", "-n", "19", "ionice", "-c", "3", "rclone"]
    assert argv[7:] == ["bisync", "/a", "r:a"]


def test_low_priority_falls_back_when_ionice_missing():
    cfg = JobConfig(name="docs")
    argv = build_command(cfg, "/a", "r:a", which=lambda name: None if name == "ionice" else f"/bin/{name}")
    assert argv[0] == "rclone"


def test_low_priority_disabled_by_policy():
    cfg = JobConfig(name="docs", use_nice_ionice=False)
    assert build_command(cfg, "/a", "r:a", which=_which_all)[0] == "rclone"
    assert build_command(JobConfig(name="docs"), "/a", "r:a", which=_which_none)[0] == "rclone"
