"""Render the cloud-init user-data that bootstraps a lab container.

The launcher only passes the dependency list through; installing the software
is cloud-init's job inside the new environment. Each allowed dependency maps
to the shell commands appended to ``runcmd``.
"""

import yaml

# Commands run by cloud-init for each dependency, in request order.
DEPENDENCY_COMMANDS: dict[str, list[str]] = {
    "node": [
        "curl -fsSL https://deb.nodesource.com/setup_20.x | bash -",
        "apt-get install -y nodejs",
    ],
    "postgresql": ["apt-get install -y postgresql postgresql-contrib"],
    "nginx": ["apt-get install -y nginx"],
    "redis": ["apt-get install -y redis-server"],
    "docker": [
        "apt-get install -y docker.io",
        "usermod -aG docker {ssh_user} || true",
    ],
    "mongodb": ["apt-get install -y mongodb"],
}

_BASE_PACKAGES = [
    "curl",
    "wget",
    "ca-certificates",
    "gnupg",
    "software-properties-common",
    "openssh-server",
]


def build_cloud_init(
    dependencies: list[str],
    ssh_user: str,
    authorized_keys: list[str],
) -> str:
    """Return a ``#cloud-config`` document for a new lab container.

    Unknown dependencies are skipped here; the orchestrator rejects them long
    before a launch is attempted.
    """
    runcmd = ["systemctl enable ssh", "systemctl restart ssh"]
    for dependency in dependencies:
        for command in DEPENDENCY_COMMANDS.get(dependency, []):
            runcmd.append(command.format(ssh_user=ssh_user))

    user_entry: dict = {
        "name": ssh_user,
        "sudo": "ALL=(ALL) NOPASSWD:ALL",
        "shell": "/bin/bash",
    }
    keys = [key.strip() for key in authorized_keys if key and key.strip()]
    if keys:
        user_entry["ssh_authorized_keys"] = keys

    document = {
        "package_update": True,
        "package_upgrade": True,
        "packages": _BASE_PACKAGES,
        "users": [user_entry],
        "ssh_pwauth": False,
        "runcmd": runcmd,
    }
    return "#cloud-config\n" + yaml.safe_dump(document, sort_keys=False)
