#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import os
import platform
import sys

from setuptools import find_packages, setup

HERE = os.path.dirname(os.path.abspath(__file__))


def ensure_python_3_10_or_higher():
    if sys.version_info < (3, 10):
        msg = "Requires Python 3.10 or higher."
        raise ValueError(msg)


ensure_python_3_10_or_higher()

with open(os.path.join(HERE, "dag_insights", "VERSION")) as f:
    __version__ = f.read().strip()

# We feed install_requires with `requirements/<arch>.txt` but we unpin versions
# so we don't enforce them and trap folks into dependency hell.
# (only works with `==` here)
#
# A proper production installation will do the following sequence:
#
# $ pip install -r requirements/`uname -m`.txt
# $ pip install dag-insights
#
# Because the *pinned* dependencies is what we tested
#


def extract_req(req):
    req = req.strip().split(";")[0]
    return req.split("=")[0].strip()


def read_reqs(req_file):
    deps = []
    reqs_dir, __ = os.path.split(req_file)

    with open(req_file) as f:
        reqs = f.readlines()
        for req in reqs:
            req = req.strip()
            if req == "" or req.startswith("#"):
                continue
            if req.startswith("-r"):
                subreq_file = req.split("-r")[-1].strip()
                subreq_file = os.path.join(reqs_dir, subreq_file)
                for subreq in read_reqs(subreq_file):
                    dep = extract_req(subreq)
                    if dep and dep not in deps:
                        deps.append(dep)
            else:
                dep = extract_req(req)
                if dep and dep not in deps:
                    deps.append(dep)
    return deps


def requirements_file(name):
    path = os.path.join(HERE, "requirements", f"{name}.txt")
    if not os.path.isfile(path):
        print(  # noqa: T201
            f"No requirements for architecture '{name}', defaulting to x86_64"
        )
        path = os.path.join(HERE, "requirements", "x86_64.txt")
    return path


install_requires = read_reqs(requirements_file(platform.machine() or "x86_64"))
tests_require = read_reqs(os.path.join(HERE, "requirements", "tests.txt"))

with open(os.path.join(HERE, "README.md")) as f:
    long_description = f.read()


classifiers = [
    "Programming Language :: Python",
    "Programming Language :: Python :: 3 :: Only",
]


setup(
    name="dag-insights",
    version=__version__,
    packages=find_packages(include=["dag_insights", "dag_insights.*"]),
    description=("SharePoint Online Data Access Governance report automation."),
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_data={"dag_insights": ["VERSION"]},
    include_package_data=True,
    zip_safe=False,
    classifiers=classifiers,
    python_requires=">=3.10",
    install_requires=install_requires,
    extras_require={"tests": tests_require},
    entry_points="""
      [console_scripts]
      dag-insights = dag_insights.cli:main
      """,
)
