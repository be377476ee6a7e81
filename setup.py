import io
import re

from setuptools import find_packages, setup

__version__ = re.search(
    r'__version__\s*=\s*[\'"]([^\'"]*)[\'"]',
    io.open("src/sluice/version.py", encoding="utf_8_sig").read(),
).group(1)


setup(
    name="sluice-python",
    version=__version__,
    description="sluice runs calendar-scheduled tasks which produce and consume time-scoped resources.",
    long_description="""sluice runs calendar-scheduled tasks which produce and consume time-scoped resources.""",
    author="ECMWF",
    author_email="",
    package_dir={"": "src"},
    packages=find_packages("src"),
    zip_safe=False,
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2",
        "typing_extensions",
        "networkx",
        "orjson",
        "pyzmq",
        "starlette",
        "uvicorn",
        "httpx",
        "fire",
        "psutil",
        "randomname",
        "redis",
        "tzdata",
    ],
    extras_require={
        "tests": ["pytest"],
    },
)
