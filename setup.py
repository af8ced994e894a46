import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="flowButtonGateway",
    version="0.1.0",
    description="Gateway that mirrors a button counter on an LWM2M device onto an LED and notifies the owner",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests"]),
    install_requires=[
        "AWSIoTPythonSDK",
        "libconf",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "flow_button_gateway_appd=flowButtonGateway.__main__:run",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX :: Linux",
    ],
)
