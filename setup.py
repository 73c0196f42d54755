from setuptools import setup, find_packages

package_name = 'blindspot_gateway'

setup(
    name='blindspot-gateway',
    version='1.0.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    package_data={
        package_name: ['static/*'],
    },
    python_requires='>=3.9',
    install_requires=[
        'fastapi>=0.104.0',
        'uvicorn[standard]>=0.24.0',
        'websockets>=12.0',
        'paho-mqtt>=2.0.0',
        'httpx>=0.25.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.0',
            'pytest-asyncio>=0.21',
        ],
    },
    zip_safe=False,
    description='MQTT to WebSocket gateway and camera stream relay for blind spot detection',
    license='MIT',
    entry_points={
        'console_scripts': [
            'blindspot-gateway = blindspot_gateway.main:main',
        ],
    },
)
