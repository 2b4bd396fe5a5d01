"""Setup script for the PostIt package."""
from setuptools import setup

if __name__ == "__main__":
    setup(
        name="postit",
        version="0.1.0",
        description="Depth and color sensor silhouettes rendered as mosaic tiles, with a timed text overlay",
        package_dir={
            "postit_common": "libs/common/src/postit_common",
            "postit_core": "services/core/src/postit_core",
        },
        packages=["postit_common", "postit_core"],
        install_requires=[
            "numpy>=1.23",
            "opencv-python>=4.8,<5",
            "pydantic>=2.5.0",
            "toml>=0.10.2",
            "python-dotenv>=1.0.0",
        ],
        extras_require={
            'dev': [
                "pytest>=7.4",
                "pytest-asyncio>=0.23",
                "pytest-mock>=3.12",
                "pytest-cov>=4.1",
                "mypy>=1.7",
                "ruff>=0.1.6",
            ],
        },
        entry_points={
            "console_scripts": [
                "postit-core=postit_core.__main__:main",
            ],
        },
        python_requires=">=3.11",
    )
