from upstream_skill_sync.cli import run

run()
