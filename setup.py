from setuptools import setup


setup(
    name="birt-convert",
    version="0.3.0",
    description="Convert decimal-hour columns in CSV and Excel time reports to hh:mm",
    packages=["birt_convert"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "pyyaml",
    ],
    entry_points={
        "console_scripts": [
            "birt-convert=birt_convert.cli:main",
        ]
    },
)
