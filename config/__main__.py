"""Command line interface for testing configuration loading"""
from . import settings_conf, DEFAULTS
from pathlib import Path

SECRET_KEYS = {'jwt_secret', 'smtp_password'}

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS and value:
            value = '********'
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    lines = ["[DEFAULT]"]
    for key, value in DEFAULTS.items():
        lines.append(f"{key} = {value}")

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("\n".join(lines) + "\n")
    print(f"\nWrote {examples_dir / 'settings.conf.example'}")

if __name__ == "__main__":
    main()
