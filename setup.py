import os.path

from setuptools import find_packages, setup


README = os.path.join(os.path.abspath(os.path.dirname(__file__)), "README.rst")


setup(name="nssm-exec",
      version="0.3.0",
      description="Declarative installation and configuration of Windows services through NSSM.",
      long_description=open(README).read(),
      long_description_content_type="text/x-rst",
      platforms=["Any"],
      python_requires=">=3.11",
      install_requires=["docopt", "pydantic>=2.4", "PyYAML"],
      packages=find_packages(exclude=["tests"]),
      entry_points={"console_scripts": ["nssmexec-install=nssmexec.scripts.services:install",
                                        "nssmexec-stop=nssmexec.scripts.services:stop"]})
