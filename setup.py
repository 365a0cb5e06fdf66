from setuptools import find_packages, setup

setup(
    name="sidecar-controller",
    version="0.1.0",
    packages=find_packages(
        include=[
            "sidecar_common",
            "sidecar_common.*",
            "sidecar_controller",
            "sidecar_controller.*",
            "sidecar_admin",
            "sidecar_admin.*",
        ]
    ),
    install_requires=[
        "kubernetes>=29.0.0",
        "PyYAML>=6.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sidecar-controller=sidecar_controller.__main__:main",
            "sidecar-admin=sidecar_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
