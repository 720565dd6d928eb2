# Author: clusterminp developers
