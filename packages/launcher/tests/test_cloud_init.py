"""Tests for the cloud-init document handed to new lab containers."""

import yaml

from lab_launcher.cloud_init import build_cloud_init


def _parse(document: str) -> dict:
    assert document.startswith("#cloud-config\n")
    return yaml.safe_load(document)


class TestBuildCloudInit:
    def test_creates_sudo_user_with_keys(self):
        doc = _parse(build_cloud_init([], "labuser", ["ssh-ed25519 USER", "ssh-ed25519 PLATFORM"]))

        user = doc["users"][0]
        assert user["name"] == "labuser"
        assert user["sudo"] == "ALL=(ALL) NOPASSWD:ALL"
        assert user["ssh_authorized_keys"] == ["ssh-ed25519 USER", "ssh-ed25519 PLATFORM"]
        assert doc["ssh_pwauth"] is False

    def test_empty_keys_are_dropped(self):
        doc = _parse(build_cloud_init([], "labuser", [None, "", "  "]))

        assert "ssh_authorized_keys" not in doc["users"][0]

    def test_dependency_commands_follow_request_order(self):
        doc = _parse(build_cloud_init(["redis", "nginx"], "labuser", []))

        runcmd = doc["runcmd"]
        assert runcmd.index("apt-get install -y redis-server") < runcmd.index(
            "apt-get install -y nginx"
        )

    def test_docker_adds_ssh_user_to_group(self):
        doc = _parse(build_cloud_init(["docker"], "student", []))

        assert "usermod -aG docker student || true" in doc["runcmd"]

    def test_sshd_is_enabled(self):
        doc = _parse(build_cloud_init([], "labuser", []))

        assert "systemctl enable ssh" in doc["runcmd"]
        assert "openssh-server" in doc["packages"]
