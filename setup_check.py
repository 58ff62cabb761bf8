#!/usr/bin/env python3
"""
Setup verification script for Reel Export
Run this to verify your environment can assemble videos
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).parent / ".env.local")


def print_header(text):
    """Print a formatted header"""
    print(f"\n{'='*60}")
    print(f"  {text}")
    print(f"{'='*60}")


def print_status(check, status, details=""):
    """Print status with emoji"""
    emoji = "✅" if status else "❌"
    print(f"{emoji} {check}")
    if details:
        print(f"   → {details}")


def check_python_version():
    """Check Python version"""
    print_header("PYTHON VERSION CHECK")

    version = sys.version_info
    current = f"{version.major}.{version.minor}.{version.micro}"
    is_valid = (version.major, version.minor) >= (3, 10)

    print_status(f"Python version: {current}", is_valid, "Required: 3.10+")
    return is_valid


def check_dependencies():
    """Check required dependencies"""
    print_header("DEPENDENCY CHECK")

    required_packages = [
        ('pydantic', 'pydantic'),
        ('yaml', 'PyYAML'),
        ('ffmpeg', 'ffmpeg-python'),
        ('aiohttp', 'aiohttp'),
        ('cv2', 'opencv-python'),
        ('rich', 'rich'),
        ('dotenv', 'python-dotenv')
    ]

    missing_packages = []

    for package_name, pip_name in required_packages:
        try:
            __import__(package_name)
            print_status(f"{package_name}", True)
        except ImportError:
            print_status(f"{package_name}", False, f"Run: pip install {pip_name}")
            missing_packages.append(pip_name)

    if missing_packages:
        print(f"\n📦 Missing packages: {', '.join(missing_packages)}")
        print(f"💡 Install all: pip install {' '.join(missing_packages)}")

    return len(missing_packages) == 0


def check_ffmpeg():
    """Check the ffmpeg binary the engine will run"""
    print_header("FFMPEG CHECK")

    from reel_export.video_assembly.ffmpeg_engine import ffmpeg_version

    binary = os.getenv('FFMPEG_BINARY', 'ffmpeg')
    version = ffmpeg_version(binary)
    print_status(f"FFmpeg binary: {binary}", version is not None,
                 version or "Install ffmpeg or set FFMPEG_BINARY in .env.local")
    return version is not None


def check_config_file():
    """Check configuration file"""
    print_header("CONFIGURATION CHECK")

    config_path = Path("configs/config.yaml")
    if not config_path.exists():
        print_status("Config file exists", False, "configs/config.yaml not found, defaults will be used")
        return False

    try:
        from reel_export.utils.config import Config
        config = Config.load(str(config_path))
    except Exception as e:
        print_status("Config file validation", False, f"Error: {e}")
        return False

    print_status("Config loading", True)
    print_status(
        f"Target: {config.export.target_width}x{config.export.target_height} @ {config.export.fps}fps", True
    )

    for dir_path in (config.paths.temp, config.paths.output, config.paths.logs):
        exists = Path(dir_path).exists()
        print_status(f"Directory: {dir_path}", exists)
        if not exists:
            Path(dir_path).mkdir(parents=True, exist_ok=True)
            print(f"   → Created directory: {dir_path}")

    return True


def main():
    """Main setup check function"""
    print("🎬 Reel Export - Setup Verification")
    print("=" * 60)

    checks = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("FFmpeg", check_ffmpeg),
        ("Configuration", check_config_file)
    ]

    results = []

    for check_name, check_func in checks:
        try:
            result = check_func()
            results.append((check_name, result))
        except Exception as e:
            print(f"❌ {check_name} failed with error: {e}")
            results.append((check_name, False))

    print_header("VERIFICATION RESULTS")

    passed = sum(1 for _, result in results if result)
    total = len(results)

    for check_name, result in results:
        status = "✅ PASS" if result else "❌ FAIL"
        print(f"{status} {check_name}")

    print(f"\nOVERALL: {passed}/{total} checks passed")

    if passed == total:
        print("🎉 SETUP COMPLETE! Try: python main.py export manifest.yaml -o out.mp4")
    else:
        print("🔧 SETUP NEEDED! Please address the failed checks above.")


if __name__ == "__main__":
    main()
