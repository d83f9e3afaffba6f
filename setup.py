from pathlib import Path

from setuptools import find_packages, setup

BASE_DIR = Path(__file__).parent
README = (BASE_DIR / "README.md").read_text(encoding="utf-8")

setup(
    name="hoststat-exporter",
    version="0.1.0",
    description="Prometheus exporter for host CPU, memory, disk, network and process counters.",
    long_description=README,
    long_description_content_type="text/markdown",
    author="Monitoring Stack",
    packages=find_packages(include=["hoststat_exporter", "hoststat_exporter.*"]),
    python_requires=">=3.9",
    include_package_data=True,
    install_requires=[
        "fastapi>=0.115.0",
        "uvicorn[standard]>=0.32.0",
        "psutil>=5.9.0",
        "prometheus-client>=0.20.0",
    ],
    extras_require={
        "tests": [
            "pytest>=7.4.0",
            "httpx>=0.27.0",
            "requests>=2.32.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "hoststat-exporter=hoststat_exporter.main:main",
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX :: Linux",
    ],
)
