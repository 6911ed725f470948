"""Configuration file template written by ``multipass-run init``."""

CONFIG_TEMPLATE = """\
# multipass-run configuration
#
# Every key under `defaults` is optional; omitted keys use built-in values.
# Values may reference entries from `vars` with ${name} interpolation.

vars:
  ssh_dir: ~/.ssh

defaults:
  # Locations of the multipass binary, tried in order
  multipass_paths:
    - multipass
    - /snap/bin/multipass
    - /usr/local/bin/multipass
    - /opt/homebrew/bin/multipass

  # Convergence polling after start/stop/suspend/delete/recover
  poll_interval_seconds: 2
  poll_max_attempts: 30

  # Launches also wait for an IPv4 address, so they get a larger budget
  launch_poll_max_attempts: 60
  launch_timeout_seconds: 1800

  # SSH provisioning
  ssh_username: ubuntu
  ssh_key_path: ${ssh_dir}/multipass_id_rsa
  ssh_config_path: ${ssh_dir}/config
  ssh_test_timeout_seconds: 10
"""
